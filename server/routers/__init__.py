"""HTTP routers for the Quartet server."""
