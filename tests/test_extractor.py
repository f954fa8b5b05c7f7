from modules.listing_watch.lib.extractor import extract_listings, parse_structure

PAGE = """
<html><head><title>דירות להשכרה</title></head><body>
<ul>
  <li data-testid="item-basic">
    <a class="item-layout_itemLink__X1" href="/realestate/item/abc123">
      <img data-testid="image" src="https://img.example.test/abc123.jpg">
      <span class="item-data-content_heading__A">דירה</span>
      <span class="item-data-content_heading__B">הרצל 10, תל אביב</span>
      <span class="item-data-content_itemInfoLine__C">דירה, מרכז העיר</span>
      <span class="item-data-content_itemInfoLine__D">3 חדרים • קומה 2 • 85 מ"ר</span>
      <span data-testid="price"> 6,500 ₪ </span>
    </a>
  </li>
  <li data-testid="item-basic">
    <span class="item-data-content_itemInfoLine__C">ללא תמונה</span>
  </li>
</ul>
</body></html>
"""


def test_extracts_all_fields():
    first, second = extract_listings(PAGE, page_url="https://www.yad2.co.il/realestate/rent?page=1")

    assert first.identifier == "https://img.example.test/abc123.jpg"
    assert first.link == "https://www.yad2.co.il/realestate/item/abc123"
    assert first.address == "הרצל 10, תל אביב"
    assert first.description == "דירה, מרכז העיר"
    assert first.structure == '3 חדרים • קומה 2 • 85 מ"ר'
    assert (first.floor, first.rooms, first.area) == ("2", "3", "85")
    assert first.price == "6,500 ₪"

    # Missing sub-elements become empty strings, the item is still reported.
    assert second.identifier == ""
    assert second.link == ""
    assert second.description == "ללא תמונה"
    assert second.price == ""


def test_no_item_marker_means_empty_page():
    assert extract_listings("<html><body><p>nothing here</p></body></html>") == []


def test_relative_links_default_to_site_origin():
    html = '<div data-testid="item-basic"><a class="item-layout_itemLink__Q" href="/item/1"></a></div>'
    (rec,) = extract_listings(html)
    assert rec.link == "https://www.yad2.co.il/item/1"


def test_parse_structure_half_rooms_and_misses():
    assert parse_structure("2.5 חדרים") == ("", "2.5", "")
    assert parse_structure("קומה 7 • 120 מ\"ר") == ("7", "", "120")
    assert parse_structure("") == ("", "", "")
