from typing import List, Optional

from pydantic import BaseModel


class NotificationsMarkRead(BaseModel):
    # None marks the whole inbox read
    ids: Optional[List[int]] = None
