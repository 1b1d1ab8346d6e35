"""DesignHub services: repository, merge requests, team, auth, storage and events."""
