"""
Tests for paper search.
"""

from confpaper_backend.paper_search import PaperSearch

from harness import assert_search_all_papers, assert_search_ids, assert_search_papers, search_json


class TestCollections:
    """Tests for the search collections and visibility."""

    def test_default_collections(self, u_chair, u_kohler, u_estrin, u_outsider):
        assert_search_papers(u_chair, "", "1 2 5")
        assert_search_papers(u_kohler, "", "2 3")
        assert_search_papers(u_estrin, "", "3 4")
        assert_search_papers(u_outsider, "", [])

    def test_submitted_collection(self, u_kohler):
        assert_search_papers(u_kohler, "", "2", t="s")

    def test_all_collection(self, u_chair, u_kohler):
        assert_search_all_papers(u_chair, "", "1-5")
        assert_search_all_papers(u_kohler, "", "2 3")

    def test_unknown_collection(self, u_chair):
        srch = PaperSearch(u_chair, {"q": "", "t": "rev"})
        assert srch.sorted_paper_ids() == [1, 2, 5]
        assert srch.message_list() == [{"field": "t", "message": "Collection “rev” not found", "status": 1}]


class TestTerms:
    """Tests for query terms."""

    def test_ids_and_ranges(self, u_chair):
        assert_search_all_papers(u_chair, "2-4", "2 3 4")
        assert_search_all_papers(u_chair, "#5", "5")
        assert_search_all_papers(u_chair, "4-2", "2 3 4")
        assert_search_all_papers(u_chair, "all", "1-5")

    def test_bare_words(self, u_chair):
        assert_search_all_papers(u_chair, "router", "2")
        assert_search_all_papers(u_chair, "harvard", "2 3")
        assert_search_all_papers(u_chair, '"click modular"', "2")
        assert_search_all_papers(u_chair, "soft state", "1")

    def test_keywords(self, u_chair):
        assert_search_all_papers(u_chair, "title:router", "2")
        assert_search_all_papers(u_chair, "abstract:caching", "4")
        assert_search_all_papers(u_chair, "au:kohler", "2 3")
        assert_search_all_papers(u_chair, "author:estrin", "3 4")
        assert_search_all_papers(u_chair, "topic:networking", "1 2 3")
        assert_search_all_papers(u_chair, "topic:operating", "2")
        assert_search_all_papers(u_chair, "status:withdrawn", "4")
        assert_search_all_papers(u_chair, "class:unnamed", [])

    def test_negation(self, u_chair):
        assert_search_all_papers(u_chair, "-status:draft", "1 2 4 5")
        assert_search_all_papers(u_chair, "topic:networking -au:kohler", "1")
        assert_search_all_papers(u_chair, "-3", "1 2 4 5")

    def test_unknown_keyword(self, u_chair):
        srch = PaperSearch(u_chair, {"q": "colour:red router", "t": "all"})
        assert srch.sorted_paper_ids() == [2]
        assert srch.message_list() == [{"field": "q", "message": "Unknown search keyword “colour”", "status": 1}]

    def test_unknown_status(self, u_chair):
        srch = PaperSearch(u_chair, {"q": "status:accepted", "t": "all"})
        assert srch.sorted_paper_ids() == []
        assert srch.problem_status() == 1

    def test_unbalanced_quotes(self, u_chair):
        srch = PaperSearch(u_chair, {"q": '"click', "t": "all"})
        assert srch.sorted_paper_ids() == [2]
        assert srch.message_list()[0]["message"] == "Unbalanced quotes ignored"


class TestSort:
    """Tests for result ordering."""

    def test_title_sort(self, u_chair):
        assert PaperSearch(u_chair, {"q": "", "t": "all", "sort": "title"}).sorted_paper_ids() == [4, 3, 5, 1, 2]
        assert PaperSearch(u_chair, {"q": "", "t": "all", "sort": "-title"}).sorted_paper_ids() == [2, 1, 5, 3, 4]

    def test_id_sort(self, u_chair):
        assert PaperSearch(u_chair, {"q": "", "t": "all", "sort": "-id"}).sorted_paper_ids() == [5, 4, 3, 2, 1]

    def test_unknown_sort(self, u_chair):
        srch = PaperSearch(u_chair, {"q": "", "t": "all", "sort": "score"})
        assert srch.sorted_paper_ids() == [1, 2, 3, 4, 5]
        assert srch.message_list()[0]["field"] == "sort"

    def test_order_insensitive_helper(self, u_kohler):
        assert_search_ids(u_kohler, "", "3 2")
        assert search_json(u_kohler, "") == [2, 3]
