"""Infrastructure layer: configuration, persistence, catalog and payment gateway clients."""
