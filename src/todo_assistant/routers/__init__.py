"""HTTP routers for todos, auth session and chat."""
