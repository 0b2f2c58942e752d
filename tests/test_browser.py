from bs4 import BeautifulSoup

from qb_harvest.browser import image_selector


def find(html, src):
    return BeautifulSoup(html, "html.parser").select_one(image_selector(src))


def test_image_selector_matches_non_ascii_sources():
    src = "https://cdn.example/画像/ct.png"
    assert image_selector(src) == 'img[src="https://cdn.example/画像/ct.png"]'
    assert find(f'<img src="{src}">', src) is not None


def test_image_selector_escapes_quotes():
    src = 'https://cdn.example/a"b.png'
    assert find('<img src=\'https://cdn.example/a"b.png\'>', src) is not None
    assert find('<img src="https://cdn.example/ab.png">', src) is None
