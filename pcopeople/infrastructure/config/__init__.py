"""Configuration loading (.env, environment, YAML) and client config objects."""
