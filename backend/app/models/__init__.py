# Ontology Models
from app.models.ontology import (
    Yatra, Hotel, Room, Pilgrim, Registration, RegistrationPerson, RegistrationLog
)

__all__ = [
    'Yatra', 'Hotel', 'Room', 'Pilgrim', 'Registration',
    'RegistrationPerson', 'RegistrationLog'
]
