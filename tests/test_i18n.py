from hvpilot.common.i18n import resolve_lang, tr


def test_resolve_lang_variants(monkeypatch):
    assert resolve_lang("zh_CN.UTF-8") == "zh"
    assert resolve_lang("en-US") == "en"
    assert resolve_lang("fr_FR") == "zh"

    monkeypatch.setenv("HVPILOT_LANG", "en")
    assert resolve_lang() == "en"


def test_tr_formats_and_falls_back():
    assert tr("lifecycle.remove_files.force_required", lang="zh", count=2) == "未指定 --force，保留 2 个文件/目录"
    assert tr("lifecycle.remove_files.force_required", lang="en", count=2).startswith("--force not given")
    assert tr("lifecycle.no.such.key", lang="en") == "lifecycle.no.such.key"
    # 缺少格式化参数时返回原文
    assert "{count}" in tr("lifecycle.remove_files.force_required", lang="zh", other=1)
