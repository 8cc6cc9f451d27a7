from pydantic import BaseModel, ConfigDict, Discriminator
from typing import Optional, List, Union, Literal, Annotated


class CardElementButton(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    type: Literal["postback", "web_url"] = "postback"
    payload: Optional[str] = None
    url: Optional[str] = None

class CardElement(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    buttons: List[CardElementButton] = []

class QuickReply(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    payload: str

# Actions are immutable once emitted by the walker
class BaseAction(BaseModel):
    model_config = ConfigDict(frozen=True)

class SendText(BaseAction):
    type: Literal["send_text"] = "send_text"
    text: str

class SendImage(BaseAction):
    type: Literal["send_image"] = "send_image"
    image_url: str

class SendCard(BaseAction):
    type: Literal["send_card"] = "send_card"
    elements: List[CardElement]

class SendQuickReplies(BaseAction):
    type: Literal["send_quick_replies"] = "send_quick_replies"
    text: str
    replies: List[QuickReply]

class SendTyping(BaseAction):
    type: Literal["send_typing"] = "send_typing"

class NoOp(BaseAction):
    type: Literal["no_op"] = "no_op"
    reason: str = ""

OutboundAction = Annotated[
    Union[SendText, SendImage, SendCard, SendQuickReplies, SendTyping, NoOp],
    Discriminator("type")
]
