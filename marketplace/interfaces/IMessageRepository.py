from abc import ABC, abstractmethod
from typing import List

from marketplace.domain.schemas import MessageRecord

class IMessageRepository(ABC):
    @abstractmethod
    def list_messages(self, order_id: str) -> List[MessageRecord]:
        pass

    @abstractmethod
    def add_message(self, order_id: str, sender: str, content: str) -> MessageRecord:
        pass
