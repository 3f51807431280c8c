"""Keys, errors, noise models and Lie-group math shared by all layers."""
