"""Google Business Profile integration: OAuth, tokens, API client and review sync."""
