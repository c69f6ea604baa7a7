"""Table-scoped SQL builders. Statements carry no schema; the session's search_path selects the tenant."""
