"""Flask blueprints for the storefront."""
