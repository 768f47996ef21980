"""Connection settings for the production test dashboard.

``config.connection`` reads and writes the ``config.json`` document that
names the SQL Server instance, database, login and default table, and turns
it into an ODBC connection string.
"""
