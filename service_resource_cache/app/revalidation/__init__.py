"""
Revalidation scheduling for subscribed cache keys.
"""
