"""Service layer: generation lifecycle, sessions, media storage and API logs."""
