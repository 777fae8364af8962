"""Domain services: categorisation, matching, parsing, analytics and workflows."""
