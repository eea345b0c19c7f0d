"""
Shipping API Views.

Implements:
- POST /shipping/serviceability/ - Courier availability between two postcodes
"""
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import ServiceabilitySerializer
from .services import check_serviceability


class ServiceabilityView(APIView):
    """
    POST: Check whether the courier delivers to a postcode.

    Request Body:
    {"pickup_postcode": "560001", "delivery_postcode": "110001", "cod": true, "weight": "0.5"}
    """

    def post(self, request):
        serializer = ServiceabilitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = check_serviceability(
            data['pickup_postcode'],
            data['delivery_postcode'],
            cash_on_delivery=data['cod'],
            weight=data['weight']
        )
        return Response(result)
