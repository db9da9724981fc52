"""Client services: session, mutations, settings and read views, plus their container."""
