from PIL import Image, UnidentifiedImageError
import io

class ImageProcessor:
    """Utility class for image processing"""

    @staticmethod
    def is_valid_image(image_data: bytes) -> bool:
        """True when Pillow can identify and verify the data as an image."""
        try:
            with Image.open(io.BytesIO(image_data)) as img:
                img.verify()
            return True
        except (UnidentifiedImageError, OSError, SyntaxError):
            return False
