"""Site health checks: TLS inspection, page capture and result persistence for URL batches."""
