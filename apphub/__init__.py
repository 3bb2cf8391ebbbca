"""AppHub: bookmark dashboard API over Firebase, Postgres or Supabase storage."""
