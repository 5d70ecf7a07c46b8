"""Service layer: bundler transport and the video request pipeline."""
