"""Graph operations: entity repositories, relation manager and analytics."""
