# Collection Names
COLLECTIONS = {
    'maintenance_requests': 'maintenance_requests',
    'notifications': 'notifications',
    'request_messages': 'request_messages',
    'counters': 'counters',
}

