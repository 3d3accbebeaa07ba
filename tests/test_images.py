from cc_backend import ReferenceImage
from cc_errors import ImageGenerationFailure
from cc_images import IMAGE_FILTERS, ImageStudio, apply_filter, download_filename


class DummyImageGateway:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def generate_image(self, prompt, reference=None):
        self.calls.append((prompt, reference))
        if self.fail:
            raise ImageGenerationFailure("Image generation failed. Last error: Rate-limited")
        return "aW1hZ2U="


def test_apply_filter_is_idempotent():
    suffix = dict(IMAGE_FILTERS)["Cinematic"]
    once = apply_filter("a dog", suffix)
    assert once == "a dog" + suffix
    assert apply_filter(once, suffix) == once


def test_download_filename():
    assert download_filename("A dog in the snow at dusk") == "A_dog_in_the_snow_at.png"
    assert download_filename("") == "generated_image.png"


def test_blank_prompt_issues_no_request():
    gateway = DummyImageGateway()
    studio = ImageStudio(gateway)
    state = studio.generate("   ")
    assert state.error == "Please enter a prompt for the image."
    assert gateway.calls == []


def test_generate_with_reference_and_filter():
    gateway = DummyImageGateway()
    studio = ImageStudio(gateway)
    ref = ReferenceImage.from_bytes(b"jpg")
    studio.set_prompt("a dog")
    studio.apply_filter(", watercolor")
    studio.set_reference(ref)
    state = studio.generate()
    assert gateway.calls == [("a dog, watercolor", ref)]
    assert state.image_b64 == "aW1hZ2U="
    assert not state.busy and state.error is None


def test_failure_clears_previous_image():
    gateway = DummyImageGateway()
    studio = ImageStudio(gateway)
    studio.generate("first")
    gateway.fail = True
    state = studio.generate("second")
    assert state.image_b64 is None
    assert state.error.startswith("Image generation failed")
    assert not state.busy
