"""Release side of the pipeline: keys, packaging, verification, manifests."""
