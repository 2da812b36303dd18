"""Interpolation pipeline stages: engine adapter, snapshot selection, masking and tracing."""
