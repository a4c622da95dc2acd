"""GitHub webhook ingress: event parsing, filtering and the HTTP server."""
