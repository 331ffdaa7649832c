"""SpendSync: collaborative expense tracking API."""
