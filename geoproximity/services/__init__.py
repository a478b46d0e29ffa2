"""Domain services: record store, grid index, query engine and registrar."""
