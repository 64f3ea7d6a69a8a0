from quotedesk.app.render import build_header_html, build_table_html, compute_grand_total, create_template_env


def _items():
    return [
        {"originalDescription": "1XH", "identifiedPipeType": "ERW", "quantity": "10", "unitRate": "100.00",
         "marginPercent": "10", "finalRate": "110.00"},
        {"originalDescription": "2XM", "identifiedPipeType": "ERW", "quantity": "5", "unitRate": "200.00",
         "marginPercent": "", "finalRate": "200.00"},
        {"originalDescription": "3 x 40", "identifiedPipeType": "Seamless", "quantity": "2", "unitRate": "50",
         "marginPercent": "0", "finalRate": "50.00"},
    ]


def test_grand_total():
    assert compute_grand_total(_items()) == (2200.0, "2200.00")
    assert compute_grand_total(None) == (0.0, "0.00")


def test_table_groups_rows_by_pipe_type():
    html, total, formatted = build_table_html(_items(), create_template_env())

    assert formatted == "2200.00"
    assert html.count('class="pipe-type-header"') == 2
    assert "MS ERW Pipe as per IS 1239/ 3589" in html
    assert "CS Seamless Pipe as per ASTM 106 Gr. B" in html
    assert "1&#34; NB X Heavy -- ERW" in html
    assert "2&#34; NB X Medium -- ERW" in html
    assert "3&#34; NB X Sch 40" in html
    assert html.count('class="item-row"') == 3


def test_table_escapes_model_text():
    items = [{"originalDescription": "<script>x</script>", "identifiedPipeType": "Other", "quantity": "1",
              "finalRate": "1"}]
    html, _, _ = build_table_html(items, create_template_env())
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_table_ignores_non_dict_items():
    html, total, _ = build_table_html(["oops", None], create_template_env())
    assert total == 0.0
    assert 'class="item-row"' not in html


def test_header_fields():
    html = build_header_html(
        {"quotationDate": "October 17, 2026", "customerName": "R. Mehta", "companyName": "Mehta Infra",
         "projectName": "Plant 2", "mobileNumber": "98765"},
        create_template_env(),
        quote_number="DSC-108",
    )
    assert 'value="October 17, 2026"' in html
    assert 'value="R. Mehta"' in html
    assert 'value="Mehta Infra"' in html
    assert 'value="Plant 2"' in html
    assert 'value="DSC-108"' in html
