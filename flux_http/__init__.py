"""flux-http: a timing-instrumented HTTP/HTTPS client."""
