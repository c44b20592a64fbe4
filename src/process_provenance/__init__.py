"""Process provenance metadata: hierarchical labels and Kubernetes runtime identity resolution."""
