"""
Ledger backend for the admin dashboard.

Routers are grouped by domain area:
- users: user CRUD and avatars
- transactions: transaction CRUD and per-user listings
- upload: ZIP archive import (userData.json, transactions.json, avatar.png)
- imports: history of completed imports
- dashboard: summary figures
- health: liveness and a database round trip
"""
