"""Abstract ports implemented by the infrastructure layer."""
