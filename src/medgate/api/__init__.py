"""Call-shape entry points: the Gateway and the error Responder."""
