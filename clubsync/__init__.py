"""ClubSync: keeps the club membership database in sync with Wild Apricot."""
