"""HTTP and WebSocket surface of DesignHub."""
