"""PostgreSQL statements and row models for the inbox and outbox event tables."""