"""DesignHub — Git-style version control for design documents."""
