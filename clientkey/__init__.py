"""ClientKey billing and lifecycle-messaging engine."""
