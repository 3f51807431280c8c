"""Camera projection, manifold metadata and reprojection factors."""
