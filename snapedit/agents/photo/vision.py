from langchain_core.messages import HumanMessage

from snapedit.imaging.data_urls import ensure_data_url

def build_human_message(text: str, image_urls: list[str]) -> HumanMessage:
    if not image_urls:
        return HumanMessage(content=text)

    content = [{"type": "text", "text": text}]
    for url in image_urls:
        content.append({"type": "image_url", "image_url": {"url": ensure_data_url(url)}})

    return HumanMessage(content=content)
