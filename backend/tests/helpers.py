import io

from PIL import Image

from backend.security import token_for_user


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


def png_bytes(size=(64, 48), color=(20, 160, 60)):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()
