"""Image preparation: partition mapping, mutations, network identity and the pipeline."""
