"""HTTP transport: request pipeline, authentication and pagination."""
