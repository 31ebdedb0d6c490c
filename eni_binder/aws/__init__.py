"""AWS collaborators: instance metadata and the EC2 inventory client."""
