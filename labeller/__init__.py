"""USB Node Labeller - keeps a Kubernetes node's labels in sync with attached USB devices."""
