"""Application layer: cache services composed over the infrastructure protocols."""
