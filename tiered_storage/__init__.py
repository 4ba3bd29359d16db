"""S3 object storage clients for tiered storage."""
